# src/core/__init__.py
"""
Доменный слой (Core Domain).
Заявки, оценки и подмножество данных пользователей.
"""
