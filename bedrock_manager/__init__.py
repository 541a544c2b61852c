# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager - Dedicated Server Lifecycle Service

Keeps a single Minecraft Bedrock dedicated server installed, updated and
running, and installs behavior/resource packs into its worlds.
"""

__version__ = "1.0.0"
__author__ = "The Bedrock Manager Authors"
