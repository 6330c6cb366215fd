"""Lecture content pipeline.

Turns a video URL into captions, an educational summary with objectives and a
quiz, and a semantic index that a chat assistant can query for grounded
answers.
"""
