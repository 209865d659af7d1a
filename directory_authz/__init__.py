"""
Authorization, entitlement and subscription-lifecycle core for the
local business directory platform.
"""
