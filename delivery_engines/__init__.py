"""
delivery_engines -- pure calculation engines.

Engines take every input as a parameter, perform no I/O and read no clock.
They may import only ``delivery_kernel.domain`` value types and the tracer.
"""
