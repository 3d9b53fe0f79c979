"""GraphQL documents used by the explore feed."""

# Every manga the server knows about, library flag included. Library first.
EXPLORE_ALL_MANGA = """
  query ExploreAllManga {
    mangas(orderBy: IN_LIBRARY_AT, orderByType: DESC) {
      nodes {
        id title thumbnailUrl inLibrary genre status
        source { id displayName }
      }
    }
  }
"""

# Genre row against the local DB
MANGAS_BY_GENRE_EXPLORE = """
  query MangasByGenreExplore($genre: String!, $first: Int) {
    mangas(
      filter: { genre: { includesInsensitive: $genre } }
      first: $first
      orderBy: IN_LIBRARY_AT
      orderByType: DESC
    ) {
      nodes {
        id title thumbnailUrl inLibrary genre status
        source { id displayName }
      }
    }
  }
"""

GET_SOURCES = """
  query GetSources {
    sources {
      nodes {
        id
        name
        lang
        displayName
        iconUrl
        isNsfw
      }
    }
  }
"""

# type is POPULAR, LATEST or SEARCH
FETCH_SOURCE_MANGA = """
  mutation FetchSourceManga($source: LongString!, $type: FetchSourceMangaType!, $page: Int!, $query: String) {
    fetchSourceManga(input: { source: $source, type: $type, page: $page, query: $query }) {
      mangas {
        id
        title
        thumbnailUrl
        inLibrary
      }
      hasNextPage
    }
  }
"""

UPDATE_MANGA = """
  mutation UpdateManga($id: Int!, $inLibrary: Boolean) {
    updateManga(input: { id: $id, patch: { inLibrary: $inLibrary } }) {
      manga {
        id
        inLibrary
      }
    }
  }
"""
