"""Helper utilities shared by the transport, assembler and client."""
