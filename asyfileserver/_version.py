
__version__ = "0.1.0"
__banner__ = \
"""
# asyfileserver %s 
# Serving a folder over HTTP/HTTPS with asyncio and h11
""" % __version__
