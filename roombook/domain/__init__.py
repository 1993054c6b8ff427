"""Pure booking domain logic: intervals, state machines and the availability index."""
