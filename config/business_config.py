"""
Program configuration - swappable business rules

A different influencer program can provide its own configuration by
implementing BusinessConfig and replacing the default instance.
"""
from abc import ABC, abstractmethod
from typing import List, Dict, Any


class BusinessConfig(ABC):
    """Abstract base class for program configuration"""

    @abstractmethod
    def get_activation_bands(self) -> List[Dict[str, Any]]:
        """Commission multiplier bands, ordered by ``min``"""
        pass

    @abstractmethod
    def get_no_activation_label(self) -> str:
        """Label used when a cycle has no validated activations"""
        pass

    @abstractmethod
    def get_seed_sku_points(self) -> List[Dict[str, Any]]:
        """SKU point rates inserted by the database init script"""
        pass

    @abstractmethod
    def get_seed_influencers(self) -> List[Dict[str, Any]]:
        """Influencers inserted by the database init script"""
        pass

    @abstractmethod
    def get_seed_scripts(self) -> List[Dict[str, Any]]:
        """Content scripts inserted by the database init script"""
        pass


class InfluencerProgramConfig(BusinessConfig):
    """Default influencer program configuration"""

    def get_activation_bands(self) -> List[Dict[str, Any]]:
        return [
            {"min": 1, "max": 4, "factor": 1.0,
             "label": "1 a 4 ativacoes validadas (100%)"},
            {"min": 5, "max": 9, "factor": 1.25,
             "label": "5 a 9 ativacoes validadas (125%)"},
            {"min": 10, "max": 14, "factor": 1.5,
             "label": "10 a 14 ativacoes validadas (150%)"},
            {"min": 15, "max": 19, "factor": 1.75,
             "label": "15 a 19 ativacoes validadas (175%)"},
            {"min": 20, "max": None, "factor": 2.0,
             "label": "20 ou mais ativacoes validadas (200%)"},
        ]

    def get_no_activation_label(self) -> str:
        return "Sem ativacoes validadas no ciclo"

    def get_seed_sku_points(self) -> List[Dict[str, Any]]:
        return [
            {"sku": "HP-GLOSS-01", "points_per_unit": 5},
            {"sku": "HP-SERUM-30", "points_per_unit": 10},
            {"sku": "HP-KIT-FULL", "points_per_unit": 25},
        ]

    def get_seed_influencers(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": "Influenciadora Exemplo",
                "instagram": "hidra.influencer",
                "email": "influencer@hidrapink.com",
                "coupon": "HIDRA10",
                "commission_rate": 0.10,
            },
        ]

    def get_seed_scripts(self) -> List[Dict[str, Any]]:
        return [
            {
                "title": "Rotina da manha",
                "description": "Mostrar o serum na rotina de skincare da manha.",
            },
        ]


# Default configuration instance (swap for another implementation if needed)
business_config = InfluencerProgramConfig()
