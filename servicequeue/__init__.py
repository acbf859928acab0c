"""Walk-in service queue: ticket transitions and live display state."""
