"""Clients for the hosted model and the services built on it."""

from atomchat.gateway.model import ModelGateway, image_data_url
from atomchat.gateway.translator import Translator

__all__ = ["ModelGateway", "Translator", "image_data_url"]
