"""localcert tests"""
