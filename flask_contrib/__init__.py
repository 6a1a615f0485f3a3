# SPDX-License-Identifier: Apache-2.0

"""
flask-contrib - middleware adapters binding third-party libraries to Flask.

Import adapters from their modules, e.g. ``flask_contrib.middleware.cors``;
each one only pulls in the library it wraps.
"""

__version__ = "0.1.0"
