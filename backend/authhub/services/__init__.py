"""authhub services: token codec, token store and token authorities."""
