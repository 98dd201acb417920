"""EventBoard: events with role-based visibility and attendance."""
