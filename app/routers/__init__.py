"""
Routers module - API endpoint handlers organized by feature.

- generation: start, stream (SSE), inspect and cancel generation sessions
- edit: start line-range edits of a project's existing page
"""
