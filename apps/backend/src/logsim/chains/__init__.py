"""Chain definitions, execution records and the step executor."""
