"""Infrastructure: SQL persistence, picker, background dispatch, cache."""
