from typing import Callable, NamedTuple
from .models import Episode, MediaItem, Movie

def movie_state_equal(a: Movie, b: Movie) -> bool:
    return (a.external_number == b.external_number and
            a.play_count == b.play_count and
            a.resume.position == b.resume.position)

def episode_state_equal(a: Episode, b: Episode) -> bool:
    # Unique ids differ between servers for the same episode, so they are not compared
    return (a.label == b.label and
            a.show_title == b.show_title and
            a.play_count == b.play_count and
            a.resume.position == b.resume.position)

def movie_same_title(a: Movie, b: Movie) -> bool:
    return a.label == b.label and a.year == b.year

def episode_same_title(a: Episode, b: Episode) -> bool:
    return a.label == b.label and a.show_title == b.show_title

class MatchRules(NamedTuple):
    """
    The pair of relations the reconciler needs for one media kind.
    state_equal finds items already in sync, same_title finds the counterpart
    of an item that is not.
    """
    kind: str
    state_equal: Callable[[MediaItem, MediaItem], bool]
    same_title: Callable[[MediaItem, MediaItem], bool]

MOVIE_RULES = MatchRules("movie", movie_state_equal, movie_same_title)
EPISODE_RULES = MatchRules("episode", episode_state_equal, episode_same_title)

