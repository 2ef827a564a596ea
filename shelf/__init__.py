"""Komi Shelf core package.

Modules:
- scanner: folder tree classification into item records
- entity_store: one JSON file per record plus the library index
- documents: settings, reading progress and tag assignment files
- service: scan/metadata merge, refresh and edits
- taxonomy: tag catalog with usage-checked deletion
- rename: folder rename for title edits
- library: the facade every consumer goes through
- server: FastAPI app for the HTTP bridge
- config: INI parsing and config object
"""
