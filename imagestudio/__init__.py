"""Monthly-quota gateway in front of an image-generation provider."""
