"""Phase and recurrence scheduling for project timelines."""
