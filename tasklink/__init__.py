"""Task link synchronization engine"""
