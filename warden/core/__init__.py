"""Core permission engine for warden."""
