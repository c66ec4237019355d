"""Entity store"""
