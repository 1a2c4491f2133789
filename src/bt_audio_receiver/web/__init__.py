"""Local control API: aiohttp routes, server and log streaming."""
