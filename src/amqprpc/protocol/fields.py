"""Protocol constants.

Keep these in one place to avoid stringly-typed message handling.
"""

# Request envelope keys.
TYPE = "type"
DATA = "data"

# Reply envelope key marking an error reply.
ERROR = "error"

# Fixed error messages sent back to callers.
NOT_REGISTERED = "RPC Call not registered"
UNKNOWN_ERROR = "Unknown Error"
MALFORMED_REQUEST = "Malformed RPC request"
