''' Wrapper module around :mod:`orjson` providing the equivalent of
    :func:`json.loads` and :func:`json.dumps`.
'''

import orjson


# orjson.dumps returns bytes, which is what goes on the wire; loads accepts
# either bytes or str.

dumps = orjson.dumps
loads = orjson.loads

JSONDecodeError = orjson.JSONDecodeError

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
