"""Mirror a NodeImage account into a WebDAV folder."""

__version__ = "1.0.0"
