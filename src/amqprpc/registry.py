""" The handler registry: a table mapping request type tags to the
    functions that service them.
"""

import collections.abc
import threading


class Handlers(collections.abc.Mapping):
    """ A mapping from type tag to handler function. Each handler is called
        with the request's data and either returns the reply value or
        raises an exception.

        Entries can be supplied at construction time, or added with
        :func:`register`, until the registry is frozen; a server freezes its
        registry before it starts consuming, after which the table is
        read-only.
    """

    def __init__(self, handlers=None, **kwargs):

        self._handlers = dict()
        self._frozen = False
        self._lock = threading.Lock()

        if handlers is not None:
            for type,handler in dict(handlers).items():
                self.register(type, handler)

        for type,handler in kwargs.items():
            self.register(type, handler)


    def __getitem__(self, type):
        return self._handlers[type]


    def __iter__(self):
        return iter(self._handlers)


    def __len__(self):
        return len(self._handlers)


    def __repr__(self):
        return 'Handlers(' + repr(sorted(self._handlers)) + ')'


    @property
    def frozen(self):
        return self._frozen


    def freeze(self):
        """ Prevent any further registration. Calling this more than once
            is harmless.
        """

        with self._lock:
            self._frozen = True


    def register(self, type, handler=None):
        """ Register *handler* for requests tagged *type*. If *handler* is
            omitted this returns a decorator::

                @handlers.register('add')
                def add(data):
                    return data[0] + data[1]
        """

        if handler is None:
            def decorator(function):
                self.register(type, function)
                return function
            return decorator

        if not isinstance(type, str):
            raise TypeError('handler type tags must be strings, not ' + repr(type))

        if not callable(handler):
            raise TypeError('handler for ' + repr(type) + ' is not callable')

        with self._lock:
            if self._frozen:
                raise RuntimeError('handlers cannot be registered once serving has begun')

            if type in self._handlers:
                raise ValueError('handler already registered for ' + repr(type))

            self._handlers[type] = handler

        return handler


    def lookup(self, type):
        """ Return the handler for *type*, or None if there isn't one.
        """

        return self._handlers.get(type)


# end of class Handlers


def handlers(mapping=None, **kwargs):
    """ Return a :class:`Handlers` instance for *mapping*, which may already
        be one.
    """

    if isinstance(mapping, Handlers) and not kwargs:
        return mapping

    return Handlers(mapping, **kwargs)


# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
