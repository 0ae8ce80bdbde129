"""Token manager, state codec, discovery cache, cleanup and their storage backends."""
