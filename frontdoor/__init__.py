"""Front door for a compiled single page app: static files plus a /CIS reverse proxy."""
