class SymmetryFunctionError(Exception):

    def __init__(self, msg):
        super().__init__(msg)
        self.msg = msg


class ConfigurationError(SymmetryFunctionError, ValueError):

    def __init__(self, msg):
        super().__init__("Invalid configuration: {}".format(msg))


class GeometryError(SymmetryFunctionError, ValueError):

    def __init__(self, msg):
        super().__init__("Invalid geometry: {}".format(msg))


class BufferShapeError(SymmetryFunctionError, ValueError):

    def __init__(self, name, msg):
        super().__init__("Buffer `{}': {}".format(name, msg))


class StaleContextError(SymmetryFunctionError, RuntimeError):

    def __init__(self, msg="No forward result available for backprop."):
        super().__init__(msg)
