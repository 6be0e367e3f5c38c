"""G.711 mu-law helpers for the 8 kHz narrowband telephony leg."""
