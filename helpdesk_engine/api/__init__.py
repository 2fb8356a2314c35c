"""Helpdesk Engine HTTP API"""
