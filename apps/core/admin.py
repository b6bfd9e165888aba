"""
Django admin configuration for core app.
"""
from django.contrib import admin


# Customize admin site header and title
admin.site.site_header = "Siteline Administration"
admin.site.site_title = "Siteline Admin"
admin.site.index_title = "Welcome to Siteline Administration"
