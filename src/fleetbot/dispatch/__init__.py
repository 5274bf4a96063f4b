"""Inbound message dispatch: prefix parsing, guards, the pipeline and event listeners."""
