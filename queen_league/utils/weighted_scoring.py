from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from queen_league.config import Config
from queen_league.data_models.scoring import EpisodeScoreCandidate, RosterEntry, ScoringConfig
from queen_league.utils.scoring_exceptions import ConfigError


class MultiplierResolver:
    """Turns sparse multiplier settings into a complete rank -> multiplier table"""
    
    @staticmethod
    def parse_multiplier(value) -> Optional[float]:
        """
        Parse a configured multiplier
        
        Args:
            value: Raw setting value (usually a string)
            
        Returns:
            Multiplier in (0, Config.MAX_RANK_MULTIPLIER], or None if the value is unusable
        """
        if value is None or isinstance(value, bool):
            return None
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation:
            return None
        if not parsed.is_finite() or parsed <= 0:
            return None
        multiplier = float(parsed)
        # Values like 1e-400 underflow to 0.0 once converted
        if not 0 < multiplier <= Config.MAX_RANK_MULTIPLIER:
            return None
        return multiplier
    
    @staticmethod
    def resolve(settings: Mapping[str, str],
                defaults: Optional[Mapping[int, float]] = None) -> Tuple[ScoringConfig, List[ConfigError]]:
        """
        Resolve multipliers for ranks 1..4 from a settings mapping
        
        Missing keys silently take the default. Present but unparsable,
        non-positive or out-of-range values also take the default and are
        reported back, as are multiplier keys for ranks outside the table
        (those ranks score with Config.FALLBACK_MULTIPLIER).
        
        Args:
            settings: Flat key -> string settings (extra keys are ignored)
            defaults: Rank -> default multiplier table
            
        Returns:
            (ScoringConfig, list of ConfigError for rejected values)
        """
        defaults = defaults or Config.DEFAULT_RANK_MULTIPLIERS
        multipliers: Dict[int, float] = {}
        issues: List[ConfigError] = []
        
        for rank, default in sorted(defaults.items()):
            key = Config.multiplier_key(rank)
            raw = settings.get(key)
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                multipliers[rank] = float(default)
                continue
            parsed = MultiplierResolver.parse_multiplier(raw)
            if parsed is None:
                issues.append(ConfigError(key, raw, default))
                multipliers[rank] = float(default)
            else:
                multipliers[rank] = parsed
        
        known_keys = {Config.multiplier_key(rank) for rank in defaults}
        for key in sorted(settings):
            if not key.startswith(Config.MULTIPLIER_KEY_PREFIX) or key in known_keys:
                continue
            raw = settings[key]
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                continue
            issues.append(ConfigError(key, raw, Config.FALLBACK_MULTIPLIER))
        
        return ScoringConfig(multipliers=multipliers), issues
    
    @staticmethod
    def override_to_settings(override: Mapping[int, object]) -> Dict[str, str]:
        """Express a rank -> multiplier override in settings form so it resolves the same way"""
        return {Config.multiplier_key(int(rank)): str(value) for rank, value in override.items()}


class WeightedScoreCalculator:
    """Pure weighted score calculation for roster picks"""
    
    @staticmethod
    def to_decimal(value) -> Decimal:
        if value is None:
            return Decimal(0)
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))
    
    @staticmethod
    def calculate_points(raw_points, multiplier: float) -> Decimal:
        """
        Weight raw points by a rank multiplier
        
        Rounding to Config.POINTS_PRECISION happens here and nowhere else.
        
        Returns:
            Weighted points as a quantized Decimal
        """
        weighted = WeightedScoreCalculator.to_decimal(raw_points) * WeightedScoreCalculator.to_decimal(multiplier)
        return weighted.quantize(Config.POINTS_PRECISION, rounding=ROUND_HALF_UP)
    
    @staticmethod
    def calculate_entry(entry: RosterEntry, raw_points: Mapping[str, Decimal],
                        config: ScoringConfig) -> EpisodeScoreCandidate:
        """Score one roster pick; unmatched queens score 0, unmapped ranks use the fallback multiplier"""
        points = WeightedScoreCalculator.calculate_points(
            raw_points.get(entry.queen_name, Decimal(0)),
            config.multiplier_for(entry.rank)
        )
        return EpisodeScoreCandidate(
            user_id=entry.user_id,
            league_id=entry.league_id,
            queen_name=entry.queen_name,
            episode_number=entry.episode_number,
            rank=entry.rank,
            calculated_points=points
        )
    
    @staticmethod
    def calculate_all(entries: Iterable[RosterEntry], raw_points: Mapping[str, Decimal],
                      config: ScoringConfig) -> List[EpisodeScoreCandidate]:
        """
        Score every roster pick of an episode
        
        Args:
            entries: Roster snapshot for the episode (all leagues and users)
            raw_points: Queen -> summed raw points for the episode
            config: Resolved multipliers
            
        Returns:
            One candidate per roster entry, in a stable order
        """
        candidates = [
            WeightedScoreCalculator.calculate_entry(entry, raw_points, config)
            for entry in entries
        ]
        candidates.sort(key=lambda c: (c.league_id, c.user_id, c.rank, c.queen_name))
        return candidates
