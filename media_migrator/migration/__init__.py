"""
Media library migration: paged batch transformation of legacy download and
upload records into media files, folders and albums.
"""
