"""Unit task workflow: state machine, store, visibility, aggregation and coordination."""
