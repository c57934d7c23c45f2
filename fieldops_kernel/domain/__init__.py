"""Pure domain value objects: clock, workflows, events."""
