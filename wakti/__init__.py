"""WAKTI WHOOP sync service"""
