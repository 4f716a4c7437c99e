"""Help Hub messaging: realtime gateway and client session library."""
