"""RSS 订阅源目录（静态数据）."""

from retrui.models.feed import FeedDescriptor


def _feed(
    name: str,
    url: str,
    category: str,
    subcategory: str | None = None,
    region: str | None = None,
    language: str | None = "en",
) -> FeedDescriptor:
    return FeedDescriptor(
        name=name,
        url=url,
        category=category,
        subcategory=subcategory,
        region=region,
        language=language,
    )


NEWS_POLITICS: list[FeedDescriptor] = [
    _feed("BBC World", "https://feeds.bbci.co.uk/news/world/rss.xml", "News", "World", "UK"),
    _feed("CNN World", "http://rss.cnn.com/rss/edition_world.rss", "News", "World", "US"),
    _feed("Al Jazeera English", "https://www.aljazeera.com/xml/rss/all.xml", "News", "World", "QA"),
    _feed("France 24 World", "https://www.france24.com/en/rss", "News", "World", "FR"),
    _feed("Politico", "https://rss.politico.com/politics-news.xml", "News", "Politics", "US"),
    _feed("The Hill", "https://thehill.com/rss/feed/", "News", "Politics", "US"),
    _feed("NPR", "https://feeds.npr.org/1001/rss.xml", "News", "General", "US"),
    _feed("The Guardian World", "https://www.theguardian.com/world/rss", "News", "World", "UK"),
    _feed("Sky News", "https://feeds.skynews.com/feeds/rss/world.xml", "News", "World", "UK"),
    _feed("Spiegel International", "https://www.spiegel.de/international/index.rss", "News", "Germany", "DE"),
    _feed("NHK World", "https://www3.nhk.or.jp/rss/news/cat0.xml", "News", "Japan", "JP"),
    _feed("Times of India", "https://timesofindia.indiatimes.com/rssfeedstopstories.cms", "News", "India", "IN"),
    _feed("ABC Australia", "https://www.abc.net.au/news/feed/51120/rss.xml", "News", "Australia", "AU"),
    # 土耳其语
    _feed("NTV Haber", "https://www.ntv.com.tr/gundem.rss", "News", "General", "TR", "tr"),
    _feed("AA Son Dakika", "https://www.aa.com.tr/tr/rss/default?cat=guncel", "News", "Breaking", "TR", "tr"),
    # 与上一条同一 URL，目录去重时只保留第一条
    _feed("Anadolu Ajansı Haber", "https://www.aa.com.tr/tr/rss/default?cat=guncel", "News", "General", "TR", "tr"),
    _feed("BBC Türkçe", "https://feeds.bbci.co.uk/turkce/rss.xml", "News", "World", "TR", "tr"),
    _feed("DW Türkçe", "https://rss.dw.com/rdf/rss-tur-all", "News", "World", "TR", "tr"),
    _feed("T24", "https://t24.com.tr/rss", "News", "General", "TR", "tr"),
]

BUSINESS_FINANCE: list[FeedDescriptor] = [
    _feed("Bloomberg Markets", "https://feeds.bloomberg.com/markets/news.rss", "Business", "Markets", "US"),
    _feed("Forbes Business", "https://www.forbes.com/business/feed/", "Business", "General", "US"),
    _feed("CNBC", "https://www.cnbc.com/id/100003114/device/rss/rss.html", "Business", "Markets", "US"),
    _feed("The Economic Times", "https://economictimes.indiatimes.com/rssfeedsdefault.cms", "Business", "India", "IN"),
    _feed("Bloomberg HT", "https://www.bloomberght.com/rss", "Business", "General", "TR", "tr"),
]

TECHNOLOGY: list[FeedDescriptor] = [
    _feed("TechCrunch", "https://techcrunch.com/feed/", "Technology", "Startups", "US"),
    _feed("The Verge", "https://www.theverge.com/rss/index.xml", "Technology", "General", "US"),
    _feed("BBC Technology", "https://feeds.bbci.co.uk/news/technology/rss.xml", "Technology", "General", "UK"),
    _feed("Wired", "https://www.wired.com/feed/rss", "Technology", "General", "US"),
    _feed("Ars Technica", "https://feeds.arstechnica.com/arstechnica/index", "Technology", "General", "US"),
    _feed("Hacker News", "https://hnrss.org/frontpage", "Technology", "Community", "US"),
    _feed("Slashdot", "https://rss.slashdot.org/Slashdot/slashdotMain", "Technology", "Community", "US"),
    _feed("The Register", "https://www.theregister.com/headlines.atom", "Technology", "Enterprise", "UK"),
    _feed("Webtekno", "https://www.webtekno.com/rss.xml", "Technology", "General", "TR", "tr"),
]

SCIENCE: list[FeedDescriptor] = [
    _feed("Science Daily", "https://www.sciencedaily.com/rss/all.xml", "Science", "General", "US"),
    _feed("NASA Breaking News", "https://www.nasa.gov/rss/dyn/breaking_news.rss", "Science", "Space", "US"),
    _feed("New Scientist", "https://www.newscientist.com/feed/home/", "Science", "General", "UK"),
]

SPORTS: list[FeedDescriptor] = [
    _feed("BBC Sport", "https://feeds.bbci.co.uk/sport/rss.xml", "Sports", "General", "UK"),
    _feed("ESPN", "https://www.espn.com/espn/rss/news", "Sports", "General", "US"),
]

ENTERTAINMENT_ARTS: list[FeedDescriptor] = [
    _feed("Variety", "https://variety.com/feed/", "Entertainment", "Film", "US"),
    _feed("Rolling Stone", "https://www.rollingstone.com/feed/", "Entertainment", "Music", "US"),
]

OPINION_ANALYSIS: list[FeedDescriptor] = [
    _feed("The Conversation", "https://theconversation.com/global/articles.atom", "Opinion", "Analysis", "AU"),
    _feed("Diken", "https://www.diken.com.tr/feed/", "Opinion", "General", "TR", "tr"),
]

INTERNATIONAL_LANGUAGES: list[FeedDescriptor] = [
    _feed("Le Monde", "https://www.lemonde.fr/rss/une.xml", "News", "General", "FR", "fr"),
    _feed("Tagesschau", "https://www.tagesschau.de/xml/rss2/", "News", "General", "DE", "de"),
    _feed("El País", "https://feeds.elpais.com/mrss-s/pages/ep/site/elpais.com/portada", "News", "General", "ES", "es"),
    _feed("BBC Chinese", "http://www.bbc.co.uk/zhongwen/simp/index.xml", "News", "World", "CN", "zh"),
    _feed("China News Scroll", "https://www.chinanews.com.cn/rss/scroll-news.xml", "News", "Breaking", "CN", "zh"),
    _feed("BBC Hindi", "https://feeds.bbci.co.uk/hindi/rss.xml", "News", "General", "IN", "hi"),
    _feed("Asahi Shimbun", "https://www.asahi.com/rss/asahi/newsheadlines.rdf", "News", "Japan", "JP", "ja"),
]

RSS_FEEDS: list[FeedDescriptor] = [
    *NEWS_POLITICS,
    *BUSINESS_FINANCE,
    *TECHNOLOGY,
    *SCIENCE,
    *SPORTS,
    *ENTERTAINMENT_ARTS,
    *OPINION_ANALYSIS,
    *INTERNATIONAL_LANGUAGES,
]

MAIN_CATEGORIES: tuple[str, ...] = (
    "All",
    "News",
    "Business",
    "Technology",
    "Science",
    "Sports",
    "Entertainment",
    "Lifestyle",
    "Opinion",
)


def unique_by_url(feeds: list[FeedDescriptor]) -> list[FeedDescriptor]:
    """按 URL 去重，保留首次出现的条目."""
    seen: set[str] = set()
    result: list[FeedDescriptor] = []
    for feed in feeds:
        if feed.url in seen:
            continue
        seen.add(feed.url)
        result.append(feed)
    return result


def get_feeds_by_category(
    category: str, feeds: list[FeedDescriptor] | None = None
) -> list[FeedDescriptor]:
    """按分类过滤，"All" 返回全部."""
    source = RSS_FEEDS if feeds is None else feeds
    if category == "All":
        return list(source)
    return [feed for feed in source if feed.category == category]


def get_feeds_by_region(
    region: str, feeds: list[FeedDescriptor] | None = None
) -> list[FeedDescriptor]:
    source = RSS_FEEDS if feeds is None else feeds
    return [feed for feed in source if feed.region == region]


def get_feeds_by_language(
    language: str, feeds: list[FeedDescriptor] | None = None
) -> list[FeedDescriptor]:
    source = RSS_FEEDS if feeds is None else feeds
    return [feed for feed in source if feed.language == language]


def find_feed(key: str, feeds: list[FeedDescriptor] | None = None) -> FeedDescriptor | None:
    """按 URL 或名称查找订阅源."""
    source = RSS_FEEDS if feeds is None else feeds
    for feed in source:
        if feed.url == key:
            return feed
    for feed in source:
        if feed.name == key:
            return feed
    return None


def all_subcategories(feeds: list[FeedDescriptor] | None = None) -> list[str]:
    source = RSS_FEEDS if feeds is None else feeds
    return sorted({feed.subcategory for feed in source if feed.subcategory})


def all_regions(feeds: list[FeedDescriptor] | None = None) -> list[str]:
    source = RSS_FEEDS if feeds is None else feeds
    return sorted({feed.region for feed in source if feed.region})


def all_languages(feeds: list[FeedDescriptor] | None = None) -> list[str]:
    source = RSS_FEEDS if feeds is None else feeds
    return sorted({feed.language for feed in source if feed.language})
