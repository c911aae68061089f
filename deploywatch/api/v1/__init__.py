"""Version 1 of the deploywatch API."""
