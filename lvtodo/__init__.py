"""lvtodo - gamified team task manager."""
