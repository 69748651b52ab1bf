"""REST API for casa-scout."""
