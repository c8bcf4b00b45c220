"""
Vitae - PubMed Client Unit Tests
================================

Title cleaning, efetch XML parsing, retry and title-search strategies.
Network calls are replaced by patching the client's transport.
"""

import json
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from vitae.ingest.config import PubMedConfig
from vitae.research.models import PubMedArticle
from vitae.research.pubmed import (
    PubMedClient,
    article_to_entry_fields,
    clean_title_for_search,
    extract_key_words,
    parse_articles,
    title_similarity,
    title_strategies,
)
from vitae.shared.exceptions import PubMedError, RateLimitError


EFETCH_XML = """<?xml version="1.0" ?>
<PubmedArticleSet>
  <PubmedArticle>
    <MedlineCitation Status="MEDLINE" Owner="NLM">
      <PMID Version="1">31234567</PMID>
      <Article PubModel="Print">
        <Journal>
          <JournalIssue CitedMedium="Internet">
            <PubDate><Year>2019</Year><Month>Mar</Month></PubDate>
          </JournalIssue>
          <Title>Journal of neurosurgery</Title>
        </Journal>
        <ArticleTitle>Outcomes of <i>deep</i> brain stimulation.</ArticleTitle>
        <Abstract>
          <AbstractText Label="BACKGROUND">Background text.</AbstractText>
          <AbstractText Label="RESULTS">Results text.</AbstractText>
        </Abstract>
        <AuthorList>
          <Author><LastName>Smith</LastName><ForeName>John A</ForeName></Author>
          <Author><LastName>Doe</LastName><ForeName>Jane</ForeName></Author>
          <Author><LastName>Roe</LastName></Author>
          <Author><CollectiveName>DBS Study Group</CollectiveName></Author>
        </AuthorList>
      </Article>
    </MedlineCitation>
    <PubmedData>
      <ArticleIdList>
        <ArticleId IdType="pubmed">31234567</ArticleId>
        <ArticleId IdType="doi">10.3171/2018.1.JNS1234</ArticleId>
      </ArticleIdList>
    </PubmedData>
  </PubmedArticle>
  <PubmedArticle>
    <MedlineCitation>
      <PMID Version="1">29876543</PMID>
      <Article>
        <Journal>
          <JournalIssue><PubDate><MedlineDate>2018 Nov-Dec</MedlineDate></PubDate></JournalIssue>
          <Title>Neurosurgery</Title>
        </Journal>
        <ArticleTitle>Awake craniotomy in eloquent cortex</ArticleTitle>
      </Article>
    </MedlineCitation>
  </PubmedArticle>
</PubmedArticleSet>
"""


def esearch(ids):
    return json.dumps({"esearchresult": {"count": str(len(ids)), "idlist": ids}})


def fast_client(**config) -> PubMedClient:
    config.setdefault("api_key", "test-key")
    return PubMedClient(PubMedConfig(**config))


class TestTitleHelpers:

    @pytest.mark.parametrize("title,expected", [
        ("The Role of Imaging", "Role of Imaging"),
        ("Grand Rounds with John A. Smith, MD", "Grand Rounds"),
        ("Stroke care: a comprehensive multicenter review of outcomes", "Stroke care"),
        ("Stroke care: brief", "Stroke care: brief"),
        ('"Quoted" title—with dashes', "Quoted title with dashes"),
        ("The 21st Annual Meeting", "21 Annual Meeting"),
        ("  Too   many    spaces ", "Too many spaces"),
    ])
    def test_clean_title_for_search(self, title, expected):
        assert clean_title_for_search(title) == expected

    def test_extract_key_words(self):
        title = "The Use of Machine Learning for Prediction of Outcomes in Glioma"
        assert extract_key_words(title, 4) == "use machine learning prediction"

    def test_strategies_in_order(self):
        strategies = title_strategies("The Role of Imaging in Stroke Care")

        assert strategies[0] == "Role of Imaging in Stroke Care[Title]"
        assert strategies[1].endswith("[Title]")
        assert strategies[2] == '"role imaging stroke care"'
        assert strategies[3] == "role imaging stroke care"

    def test_similarity(self):
        assert title_similarity("Deep brain stimulation", "deep brain stimulation.") == 1.0
        assert title_similarity("Deep brain stimulation", "Pediatric scoliosis surgery") < 0.5
        assert title_similarity("", "anything") == 0.0


class TestParsing:

    def test_parse_articles(self):
        first, second = parse_articles(EFETCH_XML)

        assert first.pmid == "31234567"
        assert first.title == "Outcomes of deep brain stimulation."
        assert first.authors == ["Smith John A", "Doe Jane", "Roe", "DBS Study Group"]
        assert first.journal == "Journal of neurosurgery"
        assert first.pub_date == "2019-Mar"
        assert first.doi == "10.3171/2018.1.JNS1234"
        assert first.abstract == "Background text. Results text."

        assert second.pub_date == "2018-Nov"
        assert second.doi is None
        assert second.authors == []

    def test_malformed_xml(self):
        with pytest.raises(PubMedError):
            parse_articles("<PubmedArticleSet><PubmedArticle>")

    def test_article_to_entry_fields(self):
        article = PubMedArticle(
            pmid="123",
            title="A Paper",
            authors=["Smith J", "Doe J", "Roe K", "Poe E"],
            journal="Neurosurgery",
            pub_date="2024-Jan",
            doi="10.1/x",
        )
        fields = article_to_entry_fields(article)

        assert fields["description"] == "Smith J, Doe J, Roe K, et al.. Neurosurgery. 2024-Jan. DOI: 10.1/x"
        assert fields["url"] == "https://pubmed.ncbi.nlm.nih.gov/123/"
        assert fields["date"] == "2024-01-01"
        assert fields["source_type"] == "pubmed"
        assert fields["source_data"] == {"pmid": "123", "doi": "10.1/x"}

    def test_entry_fields_without_doi(self):
        article = PubMedArticle(pmid="9", title="T", authors=["Smith J"], journal="J", pub_date="2020")
        assert article_to_entry_fields(article)["description"] == "Smith J. J. 2020."


class TestTransport:

    @pytest.mark.asyncio
    async def test_retries_rate_limit_with_backoff(self):
        client = fast_client()
        client._get = AsyncMock(side_effect=[RateLimitError("PubMed"), RateLimitError("PubMed"), "ok"])

        with patch("vitae.research.pubmed.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await client._request("esearch.fcgi", {}) == "ok"

        assert [c.args[0] for c in sleep.call_args_list] == [2, 4]

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self):
        client = fast_client()
        client._get = AsyncMock(side_effect=aiohttp.ClientConnectionError("reset"))

        with patch("vitae.research.pubmed.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(PubMedError, match="reset"):
                await client._request("esearch.fcgi", {})

        assert client._get.call_count == 3

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        client = fast_client()
        client._get = AsyncMock(side_effect=PubMedError("bad request", status_code=400))

        with pytest.raises(PubMedError):
            await client._request("esearch.fcgi", {})

        assert client._get.call_count == 1

    def test_params_include_key(self):
        client = fast_client(email="dev@example.org")
        params = client._params({"term": "x"})

        assert params["db"] == "pubmed"
        assert params["api_key"] == "test-key"
        assert params["email"] == "dev@example.org"
        assert params["tool"] == "vitae"

    def test_min_interval(self):
        assert PubMedConfig().min_interval == 0.34
        assert PubMedConfig(api_key="k").min_interval == 0.1


class TestSearches:

    @pytest.mark.asyncio
    async def test_search_by_author(self):
        client = fast_client()
        client._request = AsyncMock(side_effect=[esearch(["31234567", "29876543"]), EFETCH_XML])

        articles = await client.search_by_author("Smith JA", max_results=50, sort="pub_date")

        assert [a.pmid for a in articles] == ["31234567", "29876543"]
        endpoint, params = client._request.call_args_list[0].args
        assert endpoint == "esearch.fcgi"
        assert params["term"] == "Smith JA[Author]"
        assert params["retmax"] == 50
        assert params["sort"] == "pub_date"

    @pytest.mark.asyncio
    async def test_author_without_results_skips_efetch(self):
        client = fast_client()
        client._request = AsyncMock(return_value=esearch([]))

        assert await client.search_by_author("Nobody X") == []
        assert client._request.call_count == 1

    @pytest.mark.asyncio
    async def test_title_strategy_fallthrough(self):
        client = fast_client()
        too_many = [str(i) for i in range(11)]
        client.search_ids = AsyncMock(side_effect=[[], too_many, ["31234567"]])

        ids = await client.search_title_ids("Outcomes of Deep Brain Stimulation")

        assert ids == ["31234567"]
        assert client.search_ids.call_count == 3

    @pytest.mark.asyncio
    async def test_title_strategy_errors_are_skipped(self):
        client = fast_client()
        client.search_ids = AsyncMock(side_effect=[PubMedError("boom"), ["1", "2"]])

        assert await client.search_title_ids("Outcomes of Deep Brain Stimulation") == ["1", "2"]

    @pytest.mark.asyncio
    async def test_title_last_resort(self):
        client = fast_client()
        client.search_ids = AsyncMock(side_effect=[[], [], [], [], ["7"]])

        assert await client.search_title_ids("Outcomes of Deep Brain Stimulation") == ["7"]
        last_term = client.search_ids.call_args_list[-1].args[0]
        assert last_term == "Outcomes of Deep Brain Stimulation[Title]"

    @pytest.mark.asyncio
    async def test_search_by_title_ranks_and_filters(self):
        client = fast_client()
        client.search_title_ids = AsyncMock(return_value=["31234567", "29876543"])
        client.fetch_articles = AsyncMock(return_value=parse_articles(EFETCH_XML))

        matches = await client.search_by_title("Outcomes of deep brain stimulation")

        assert [m.pmid for m in matches] == ["31234567"]
        assert matches[0].similarity == pytest.approx(1.0)
