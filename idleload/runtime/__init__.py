"""Runtime: scheduler, state machine, hosts, hooks and session."""
