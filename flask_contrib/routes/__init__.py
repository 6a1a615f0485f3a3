# SPDX-License-Identifier: Apache-2.0

"""
Routes package - Reusable blueprints.
"""
