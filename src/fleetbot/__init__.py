"""fleetbot: multi-account WhatsApp automation runtime."""
