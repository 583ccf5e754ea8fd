"""Backend for the superupload server.

Route handlers in server.py stay thin; this package holds:
- the in-memory session store and the idle-session reaper
- upload progress tracking and the upload receive path
- the session route class that resolves the ``uploadSession`` cookie
- static file serving and the save-page template expander

Session ids are capability tokens (unguessable UUID4). Responses never
expose server-side file paths.
"""
