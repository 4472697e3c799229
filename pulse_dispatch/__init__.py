"""CamerPulse Dispatch: notification fan-out, workflow escalation and stream classification."""
