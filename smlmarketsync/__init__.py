"""Push local inventory, price, barcode, customer and stock balance changes to a remote SQL gateway."""

__version__ = "0.1.0"